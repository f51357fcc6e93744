"""Internal building blocks of closure table maintenance."""
