"""Order lifecycle: repository, state machine and payment outcome updater."""
