"""
Check Search: corpus-wide policy checks over repository text.

Scans a corpus of repositories for manifest dependency declarations and CI
version directives, classifies each one against a tri-state policy
(allow / forbid / unreviewed), and reports location-anchored diagnostics with
local and batch remediation edits.
"""
