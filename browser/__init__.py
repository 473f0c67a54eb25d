"""
Browser module for the challenge solver.

Everything that touches the page DOM: selector search across
documents, shadow roots and frames, and synthetic pointer/keyboard
input with human-like timing.

Submodules:
    locator: ``TargetLocator`` and the ``SearchableNode`` providers.
    interaction: ``InteractionDriver``, ``EventStep`` sequences and the
        DOM-event / mouse input backends.
    stealth_hub: ``HumanProfile`` behavioural timing profiles (fast /
        normal / cautious / distracted).
    credentials: Speech-API credential stores, including a
        Fernet-encrypted file with key rotation.
    scripts: Raw JS payloads evaluated inside frames.
"""
