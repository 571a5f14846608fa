"""TUIC v5 relay protocol: wire codec, fragmentation, connection state, SNI sniffing and ACL rules."""

__version__ = "1.6.5"

__all__ = ["acl", "aclparse", "codec", "connection", "protocol", "tasks", "utils"]