"""I/O package: configuration, console output, event sinks and reports."""
