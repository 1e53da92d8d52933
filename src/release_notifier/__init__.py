"""Release notifier.

After a tag is released, finds the pull requests merged since the previous
release, comments on them and on the issues they close, and closes issues
that were awaiting the release.
"""

__version__ = "0.1.0"
