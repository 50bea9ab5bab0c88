from app.utils.config.env import Settings, settings
