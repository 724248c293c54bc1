"""CLI interface for Lifelines"""
