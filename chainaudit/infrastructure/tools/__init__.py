"""External command-line tool execution."""
