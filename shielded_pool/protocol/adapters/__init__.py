"""Proof system backends."""
