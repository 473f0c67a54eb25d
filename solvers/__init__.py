"""
Solvers module for the challenge solver.

Per-widget solve flows and the audio transcription stack they use.

Submodules:
    base: ``ChallengeFlow`` shared plumbing.
    recaptcha: ``RecaptchaFlow`` - checkbox, audio switch, transcribe
        and type, verify.
    turnstile: ``TurnstileFlow`` - stabilize, locate, interact, re-check.
    stabilization: ``StabilizationStateMachine`` readiness classifier.
    transcription: ``TranscriptionPipeline`` and the Wit.ai client.
    cache: Two-tier (LRU memory + TTL file) transcript cache.
    normalization: Spoken-digit normalisation across locales.
"""
