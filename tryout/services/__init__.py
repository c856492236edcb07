"""
Services package: persistence, question bank access, rankings and the
background expiry watcher.
"""
