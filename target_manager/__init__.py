"""GPS target manager: marker store, codecs, merge-on-import and tracking."""
