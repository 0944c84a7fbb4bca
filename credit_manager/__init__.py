# Credit application lifecycle & risk assessment service
