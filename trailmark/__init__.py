"""Trailmark: learner progress and resume state engine."""
