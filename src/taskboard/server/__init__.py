"""HTTP surface for the task board engine."""
