"""infrabump: dependency bump engine for Terraform and Helm projects."""

__version__ = "0.1.0"
