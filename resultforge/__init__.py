"""resultforge: deterministic, content-addressed build orchestration.

Results declare sources (git, svn, cvs or plain files) and dependencies on
other results.  Every result gets a build-id that recursively covers its
configuration, the source-ids of its sources and the build-ids of its
dependencies; artifacts are stored under that id so unchanged results are
never rebuilt.
"""

__version__ = "0.1.0"
__description__ = "Deterministic, content-addressed build orchestration for multi-source projects"

from resultforge.core.orchestrator import BuildOrchestrator, BuildPlan
from resultforge.cli.app import app as cli

__all__ = ["BuildOrchestrator", "BuildPlan", "cli", "__version__"]
