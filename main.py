#!/usr/bin/env python3
"""
vidshrink - Main Entry Point
Compress videos for in-browser playback: negotiates the most efficient codec the
target can decode, plans resolution and quality, and encodes with FFmpeg.
"""

import sys

if sys.platform.startswith('win') and hasattr(sys.stdout, 'reconfigure'):
    # Progress bars and log symbols are UTF-8
    sys.stdout.reconfigure(encoding='utf-8')
    sys.stderr.reconfigure(encoding='utf-8')

from vidshrink.cli import main

if __name__ == '__main__':
    main()
