"""arkive: backup and restore orchestration for file trees, block devices and VMs."""

__version__ = "0.1.0"
