from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./quotes.db"
    COMPANY_NAME: str = "Express Quote Déménagement"
    CURRENCY: str = "EUR"
    LOG_LEVEL: str = "INFO"

    # Floor guarantee: final price never below base * ratio
    MINIMUM_PRICE_RATIO: float = 0.9

    # Base price rates
    MOVING_VOLUME_RATE: float = 35.0         # €/m3
    MOVING_DISTANCE_RATE: float = 2.0        # €/km
    PACKING_WORKER_HOUR_RATE: float = 25.0   # €/worker/hour
    FLOOR_WITHOUT_ELEVATOR_RATE: float = 25.0  # € per floor, address without elevator

    # Equipment and constraint inference thresholds
    FURNITURE_LIFT_FLOOR_THRESHOLD: int = 3
    CARRY_DISTANCE_THRESHOLD: float = 30.0   # metres, above it the long-carry constraint is inferred
    INFERENCE_ENABLED: bool = True

    # Abuse guard on constraint/service selections
    MAX_IDS_PER_BUCKET: int = 50

    SEED_DEFAULT_RULES: bool = True

    class Config:
        env_file = ".env"


settings = Settings()
