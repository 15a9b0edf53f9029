"""Source retrieval: the build context comes from a git checkout."""

from .manager import GitCloneResult, GitCommandError, GitRepositoryManager, strip_userinfo

__all__ = ["GitCloneResult", "GitCommandError", "GitRepositoryManager", "strip_userinfo"]
