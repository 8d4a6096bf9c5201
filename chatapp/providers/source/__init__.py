"""Document source implementations.

DirectorySource is the sole implementation: PDFs, plain text and markdown
files under a root directory.  Other sources (blob storage, a CMS export)
implement IDocumentSource and are registered in main.py.
"""

from chatapp.providers.source.directory_source import DirectorySource

__all__ = ["DirectorySource"]
