"""Transport-independent domain pieces: topic rules and the transport port."""
