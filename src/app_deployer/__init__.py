"""app-deployer: declarative software deployment sessions."""

__version__ = "0.1.0"
