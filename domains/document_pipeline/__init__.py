"""
Document Pipeline Domain

Moves discovered source documents through an ordered chain of stages:
- Temp storage → stage the original PDF locally
- Mathpix → OCR the PDF into markdown
- ChatGPT → clean up the OCR markdown
- Obsidian → format the note and link its attachment
- Bundle → place note and attachment in their destination folders

Stages are chained with unbuffered channels at startup; each document is
admitted once, tracked by a persisted record, and drained on shutdown.
"""

__all__ = ["channels", "context", "coordinator", "destinations", "errors", "stages", "supervisor"]
