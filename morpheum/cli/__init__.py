"""CLI module for morpheum."""
