"""scoreflow: MusicXML to VexFlow rendering intermediate representation."""

__version__ = "0.1.0"
