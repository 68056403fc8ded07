"""Real-time transport backed by aiortc."""
