"""tofuplane — reconciliation controllers for OpenTofu/Terraform modules."""

__version__ = "0.1.0"
