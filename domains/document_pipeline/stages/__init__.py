"""
Pipeline Stages

- base.py - Stage interface and the runner chaining stages with channels
- temp_storage.py - Stage the original document locally
- mathpix.py - OCR through the Mathpix PDF API
- chatgpt.py - Markdown cleanup through ChatGPT
- obsidian.py - Note formatting
- bundle.py - Place note and attachment in destination folders
- registry.py - Stage type names to factories
"""
