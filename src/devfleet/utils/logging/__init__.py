"""Log formatting for devfleet's system log.

Import from the submodule:
    from devfleet.utils.logging.iso_formatter import ISO8601Formatter
"""

__all__: list[str] = []
