"""Online examination backend: exam authoring, timed attempts and grading."""
