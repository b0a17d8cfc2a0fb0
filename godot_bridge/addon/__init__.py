"""In-game side of the stdio bridge."""
