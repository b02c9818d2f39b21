from tikstat.transport.routeros import RouterOSTransport

__all__ = ["RouterOSTransport"]
