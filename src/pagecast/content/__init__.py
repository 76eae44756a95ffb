"""
Content Module
==============

File API and static pages the headless renderer loads.

    - create_content_router: Upload / list / delete endpoints
    - mount_static: /content and public page mounts
    - safe_filename: Upload name sanitizer
"""

from pagecast.content.routes import create_content_router, mount_static, safe_filename


__all__ = [
    "create_content_router",
    "mount_static",
    "safe_filename",
]
