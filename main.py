#!/usr/bin/env python3
"""
disfit - Main Entry Point
Compress a video until it fits under a size limit

Usage: python main.py INPUT SIZE_MB [--output PATH]
"""

from disfit.cli import main

if __name__ == '__main__':
    main()
