from .anomaly import (  # noqa: F401
    Anomaly,
    UserFeatures,
    analyze_user_behavior,
    calculate_risk_score,
    detect_anomalies,
    extract_user_features,
)
from .rules import (  # noqa: F401
    FraudThresholds,
    THRESHOLDS,
    check_product_reports,
    detect_multiple_accounts,
    detect_suspicious_bidding,
    detect_suspicious_logins,
    detect_suspicious_orders,
    detect_suspicious_product,
    perform_comprehensive_fraud_detection,
    product_risk_reasons,
)
