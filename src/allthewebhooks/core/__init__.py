"""Core module for AllTheWebhooks.

Contains logging setup, configuration loading and delivery statistics.
"""
