"""Stagehand static site generator.

Content files flow through a fixed sequence of build stages (configure,
validate, glob, load, transform, render, collect, write, cleanup). Plugins
attach callbacks to stages; a Manager runs them in order and can stop after
any stage and resume later.

The ``serve`` command wraps the same pipeline in a development server that
rebuilds on change and streams build status to the browser.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
