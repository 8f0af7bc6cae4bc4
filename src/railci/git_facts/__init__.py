from .git import current_branch, get_remote_url, head_sha, is_dirty, repo_root

__all__ = ["current_branch", "get_remote_url", "head_sha", "is_dirty", "repo_root"]
