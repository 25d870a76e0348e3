"""Overlay relay backend package.

Session rooms with state replay for live graphics renderers, plus a
debounced headless-browser export of each session's look as alpha PNGs for
vision mixers.
"""
