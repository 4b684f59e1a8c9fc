"""
Macro Regime Sector Rotation - Source Package

Modules:
    config      - Configuration management (YAML -> frozen dataclasses)
    utils       - Logging, run folders, seeding, environment versions
    data        - CSV loaders (macro features, sector and stock returns)
    labels      - Rule-based regime labeler
    models      - Random forest from scratch (train, predict, importance)
    evaluation  - Train/test split, metrics, label_and_train
    portfolio   - Long/short sector rotation backtest and statistics
"""
