from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Solana RPC
    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    rpc_timeout_sec: float = 15.0
    rpc_max_rps: float = 10.0

    # Jito block engine (bundle relay)
    relay_url: str = "https://mainnet.block-engine.jito.wtf/api/v1"
    relay_timeout_sec: float = 10.0

    # Bundling
    bundle_size: int = 5  # swap txs per bundle, tip tx not counted
    jito_tip_sol: float = 0.001

    # Swap parameters
    slippage_bps: int = 50
    compute_unit_limit: int = 400_000
    compute_unit_price_micro_lamports: int = 100_000

    # Caches
    venue_cache_ttl_sec: float = 300.0
    pool_cache_ttl_sec: float = 300.0

    # Comma-separated base58 secret keys. NEVER LOG THIS
    wallet_private_keys: str = ""

    # Key of the wallet that collects holdings for dev-dump
    main_wallet_private_key: str = ""

    # Logging
    log_level: str = "INFO"
    json_logs: bool = False
    log_file: str = "logs/bundler_{time:YYYY-MM-DD}.log"
    log_rotation: str = "20 MB"
    log_retention: str = "7 days"
    log_compression: str | None = "gz"


settings = Settings()
