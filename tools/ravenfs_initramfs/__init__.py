"""Build a minimal bootable RavenLinux initramfs from host tools."""

__version__ = "0.1.0"
