"""MediBook: appointment booking coordinator for a single clinic."""
