"""Demo applications built on outboxd."""
