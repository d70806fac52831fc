"Metadata service adapters."
