"""
prchangelog - Build a changelog from Bitbucket tags and merged pull requests.

A CLI tool that:
1. Fetches release tags and their commits from Bitbucket Server
2. Fetches merged pull requests (and pull requests merged into them)
3. Groups pull requests into the release they shipped in
4. Writes the releases as markdown to CHANGES.md

Usage:
    prchangelog init              # Write a sample prchangelog.yml
    prchangelog generate          # Prepend the next release to CHANGES.md
    prchangelog generate -o       # Regenerate the full changelog
"""

__version__ = "0.1.0"
__author__ = "prchangelog"
