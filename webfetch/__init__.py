"""
Content fetch-and-save framework.

An input plugin fills a DataTable and declares output actions, output
plugins turn the table into Savable descriptors, and the save engine
installs them into a directory with backups and duplicate suppression.
"""

__version__ = "0.1.0"
