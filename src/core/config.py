from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

load_dotenv()
class Settings(BaseSettings):
    # App Settings
    APP_NAME: str = "DeFi Yield Aggregator"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Chain RPC Settings
    # Substituted into the RPC/WS URL templates of the network registry.
    ALCHEMY_API_KEY: str = ""
    RPC_TIMEOUT_SECONDS: float = 10.0

    # Market Data API Settings
    COINGECKO_API_URL: str = "https://api.coingecko.com/api/v3"
    DEFILLAMA_COINS_URL: str = "https://coins.llama.fi"
    DEFILLAMA_YIELDS_URL: str = "https://yields.llama.fi"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    # Price Oracle Settings
    PRICE_CACHE_TTL_SECONDS: float = 30.0
    # Upper bound for a single source attempt, including retries inside the client.
    SOURCE_TIMEOUT_SECONDS: float = 15.0
    CHAINLINK_MAX_STALENESS_SECONDS: int = 3600

    # Pool Catalog Settings
    SCAN_TIMEOUT_SECONDS: float = 120.0
    # Lower is safer. Protocols missing here fall back to DEFAULT_RISK_SCORE.
    PROTOCOL_RISK_SCORES: dict[str, int] = Field(
        default_factory=lambda: {
            "Aave": 2,
            "Compound": 2,
            "Lido": 2,
            "RocketPool": 3,
            "Curve": 3,
            "Yearn": 4,
            "Balancer": 4,
            "Velodrome": 5,
            "Beefy": 5,
            "Stargate": 5,
            "QuickSwap": 6,
            "GMX": 6,
            "Radiant": 7,
            "Socket": 7,
            "JonesDAO": 8,
        }
    )
    DEFAULT_RISK_SCORE: int = 5

    # Strategy Manager Settings
    DEFAULT_HARVEST_INTERVAL_SECONDS: int = 24 * 3600
    STRATEGY_MONITOR_INTERVAL_SECONDS: float = 300.0

    # Config for Pydantic V2
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore" # Ignore extra env vars not defined here
    )

# Singleton instance to be imported across the app
settings = Settings()
