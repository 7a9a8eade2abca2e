"""Veil Stage: hidden results with a one-time reveal, and recurring channel timers."""
