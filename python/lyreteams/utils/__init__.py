"""
General-purpose utilities used across the LyreTeams packages
"""
