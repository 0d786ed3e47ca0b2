"""Static per-intent, per-language reply text used by the local fallback responder."""

from typing import Dict, List

from concierge import classifier

INTRO_TEMPLATES: Dict[str, Dict[str, str]] = {
    "en": {
        classifier.BESTSELLERS: "Here are our best sellers right now:",
        classifier.NEW_ARRIVALS: "Here's what just arrived:",
        classifier.ON_SALE: "Here are the products currently on sale:",
        classifier.RECOMMENDATIONS: "Here are a few picks I think you'll like:",
        classifier.PRODUCT_SEARCH: "Here's what I found for \"{query}\":",
        "featured": "Here are some products from our store:",
        "no_products": "I don't have product information available at the moment. Please contact us for assistance.",
        "no_results": "I couldn't find products matching \"{query}\". Try different keywords or browse our best sellers.",
        classifier.SHIPPING: "We ship to most locations. Shipping costs and delivery times are shown at checkout.",
        classifier.RETURNS: "We accept returns on most items within 30 days of delivery. Items should be unused and in their original packaging.",
        classifier.TRACK_ORDER: "You can track your order with the link in your shipping confirmation email. If you can't find it, our support team can look it up for you.",
        classifier.HELP: "I can help you find products, check shipping and returns, or track an order. What do you need?",
        classifier.GENERAL_CHAT: "Hi! I'm here to help you shop. Ask me about our products, best sellers, new arrivals, shipping or returns.",
        "policy_prefix": "Here's our policy:",
        "catalog_session": "Our product catalog connection needs to be reauthorized. The store owner has to reinstall the chat app before I can show products again.",
        "catalog_transient": "I'm having trouble loading products right now. Please try again shortly.",
    },
    "fr": {
        classifier.BESTSELLERS: "Voici nos meilleures ventes du moment :",
        classifier.NEW_ARRIVALS: "Voici nos nouveautés :",
        classifier.ON_SALE: "Voici les produits actuellement en promotion :",
        classifier.RECOMMENDATIONS: "Voici quelques suggestions pour vous :",
        classifier.PRODUCT_SEARCH: "Voici ce que j'ai trouvé pour « {query} » :",
        "featured": "Voici quelques produits de notre boutique :",
        "no_products": "Je n'ai pas d'informations sur les produits pour le moment. Veuillez nous contacter pour obtenir de l'aide.",
        "no_results": "Je n'ai trouvé aucun produit pour « {query} ». Essayez d'autres mots-clés.",
        classifier.SHIPPING: "Nous livrons dans la plupart des pays. Les frais et délais de livraison sont affichés lors du paiement.",
        classifier.RETURNS: "Nous acceptons les retours sur la plupart des articles dans les 30 jours suivant la livraison.",
        classifier.TRACK_ORDER: "Vous pouvez suivre votre commande grâce au lien dans l'e-mail de confirmation d'expédition.",
        classifier.HELP: "Je peux vous aider à trouver des produits, vérifier la livraison et les retours, ou suivre une commande.",
        classifier.GENERAL_CHAT: "Bonjour ! Je suis là pour vous aider. Posez-moi des questions sur nos produits, la livraison ou les retours.",
        "policy_prefix": "Voici notre politique :",
        "catalog_session": "La connexion à notre catalogue doit être réautorisée. Le marchand doit réinstaller l'application de chat.",
        "catalog_transient": "J'ai du mal à charger les produits. Veuillez réessayer dans un instant.",
    },
    "es": {
        classifier.BESTSELLERS: "Estos son nuestros productos más vendidos:",
        classifier.NEW_ARRIVALS: "Estas son nuestras novedades:",
        classifier.ON_SALE: "Estos productos están en oferta:",
        classifier.RECOMMENDATIONS: "Aquí tienes algunas recomendaciones:",
        classifier.PRODUCT_SEARCH: "Esto es lo que encontré para \"{query}\":",
        "featured": "Estos son algunos productos de nuestra tienda:",
        "no_products": "No tengo información de productos en este momento. Contáctanos para obtener ayuda.",
        "no_results": "No encontré productos para \"{query}\". Prueba con otras palabras.",
        classifier.SHIPPING: "Enviamos a la mayoría de destinos. Los costos y plazos de envío se muestran al pagar.",
        classifier.RETURNS: "Aceptamos devoluciones de la mayoría de artículos dentro de los 30 días posteriores a la entrega.",
        classifier.TRACK_ORDER: "Puedes rastrear tu pedido con el enlace del correo de confirmación de envío.",
        classifier.HELP: "Puedo ayudarte a encontrar productos, consultar envíos y devoluciones o rastrear un pedido.",
        classifier.GENERAL_CHAT: "¡Hola! Estoy aquí para ayudarte. Pregúntame por productos, envíos o devoluciones.",
        "policy_prefix": "Esta es nuestra política:",
        "catalog_session": "La conexión con nuestro catálogo debe reautorizarse. La tienda debe reinstalar la aplicación de chat.",
        "catalog_transient": "Tengo problemas para cargar los productos. Inténtalo de nuevo en breve.",
    },
    "de": {
        classifier.BESTSELLERS: "Das sind unsere aktuellen Bestseller:",
        classifier.NEW_ARRIVALS: "Das ist neu eingetroffen:",
        classifier.ON_SALE: "Diese Produkte sind gerade im Angebot:",
        classifier.RECOMMENDATIONS: "Hier sind ein paar Empfehlungen für dich:",
        classifier.PRODUCT_SEARCH: "Das habe ich für \"{query}\" gefunden:",
        "featured": "Hier sind einige Produkte aus unserem Shop:",
        "no_products": "Ich habe im Moment keine Produktinformationen. Bitte kontaktiere uns für Unterstützung.",
        "no_results": "Ich habe keine Produkte für \"{query}\" gefunden. Versuche andere Suchbegriffe.",
        classifier.SHIPPING: "Wir liefern an die meisten Orte. Versandkosten und Lieferzeiten siehst du an der Kasse.",
        classifier.RETURNS: "Die meisten Artikel können innerhalb von 30 Tagen nach Lieferung zurückgegeben werden.",
        classifier.TRACK_ORDER: "Du kannst deine Bestellung über den Link in der Versandbestätigung verfolgen.",
        classifier.HELP: "Ich helfe dir bei der Produktsuche, bei Versand und Rückgabe oder bei der Sendungsverfolgung.",
        classifier.GENERAL_CHAT: "Hallo! Ich helfe dir beim Einkaufen. Frag mich nach Produkten, Versand oder Rückgabe.",
        "policy_prefix": "Hier ist unsere Richtlinie:",
        "catalog_session": "Die Verbindung zu unserem Katalog muss neu autorisiert werden. Der Shop muss die Chat-App neu installieren.",
        "catalog_transient": "Ich kann die Produkte gerade nicht laden. Bitte versuche es gleich noch einmal.",
    },
    "pt": {
        classifier.BESTSELLERS: "Estes são os nossos mais vendidos:",
        classifier.NEW_ARRIVALS: "Estas são as nossas novidades:",
        classifier.ON_SALE: "Estes produtos estão em promoção:",
        classifier.RECOMMENDATIONS: "Aqui estão algumas sugestões para você:",
        classifier.PRODUCT_SEARCH: "Aqui está o que encontrei para \"{query}\":",
        "featured": "Aqui estão alguns produtos da nossa loja:",
        "no_products": "Não tenho informações de produtos no momento. Entre em contato conosco para obter ajuda.",
        "no_results": "Não encontrei produtos para \"{query}\". Tente outras palavras.",
        classifier.SHIPPING: "Enviamos para a maioria dos locais. Custos e prazos de entrega aparecem no checkout.",
        classifier.RETURNS: "Aceitamos devoluções da maioria dos itens em até 30 dias após a entrega.",
        classifier.TRACK_ORDER: "Você pode rastrear seu pedido pelo link no e-mail de confirmação de envio.",
        classifier.HELP: "Posso ajudar a encontrar produtos, ver frete e devoluções ou rastrear um pedido.",
        classifier.GENERAL_CHAT: "Olá! Estou aqui para ajudar. Pergunte sobre produtos, frete ou devoluções.",
        "policy_prefix": "Esta é a nossa política:",
        "catalog_session": "A conexão com o nosso catálogo precisa ser reautorizada. A loja precisa reinstalar o aplicativo de chat.",
        "catalog_transient": "Estou com dificuldade para carregar os produtos. Tente novamente em instantes.",
    },
    "it": {
        classifier.BESTSELLERS: "Ecco i nostri prodotti più venduti:",
        classifier.NEW_ARRIVALS: "Ecco le novità:",
        classifier.ON_SALE: "Ecco i prodotti in saldo:",
        classifier.RECOMMENDATIONS: "Ecco alcuni consigli per te:",
        classifier.PRODUCT_SEARCH: "Ecco cosa ho trovato per \"{query}\":",
        "featured": "Ecco alcuni prodotti del nostro negozio:",
        "no_products": "Al momento non ho informazioni sui prodotti. Contattaci per assistenza.",
        "no_results": "Non ho trovato prodotti per \"{query}\". Prova con altre parole.",
        classifier.SHIPPING: "Spediamo nella maggior parte dei paesi. Costi e tempi di consegna sono indicati al checkout.",
        classifier.RETURNS: "Accettiamo resi sulla maggior parte degli articoli entro 30 giorni dalla consegna.",
        classifier.TRACK_ORDER: "Puoi tracciare il tuo ordine con il link nell'e-mail di conferma della spedizione.",
        classifier.HELP: "Posso aiutarti a trovare prodotti, verificare spedizioni e resi o tracciare un ordine.",
        classifier.GENERAL_CHAT: "Ciao! Sono qui per aiutarti. Chiedimi di prodotti, spedizioni o resi.",
        "policy_prefix": "Ecco la nostra politica:",
        "catalog_session": "La connessione al catalogo deve essere autorizzata di nuovo. Il negozio deve reinstallare l'app di chat.",
        "catalog_transient": "Ho problemi a caricare i prodotti. Riprova tra poco.",
    },
}

QUICK_REPLIES: Dict[str, Dict[str, List[str]]] = {
    "en": {
        "products": ["Show all products", "New arrivals", "Best sellers", "View categories"],
        "support": ["Shipping info", "Return policy", "Track my order", "Contact support"],
        "default": ["Best sellers", "New arrivals", "On sale", "Help"],
        "retry": ["Try again", "Contact support"],
    },
    "fr": {
        "products": ["Voir tous les produits", "Nouveautés", "Meilleures ventes", "Catégories"],
        "support": ["Livraison", "Retours", "Suivre ma commande", "Contacter le support"],
        "default": ["Meilleures ventes", "Nouveautés", "Promotions", "Aide"],
        "retry": ["Réessayer", "Contacter le support"],
    },
    "es": {
        "products": ["Ver todos los productos", "Novedades", "Más vendidos", "Categorías"],
        "support": ["Envíos", "Devoluciones", "Rastrear mi pedido", "Contactar soporte"],
        "default": ["Más vendidos", "Novedades", "Ofertas", "Ayuda"],
        "retry": ["Intentar de nuevo", "Contactar soporte"],
    },
    "de": {
        "products": ["Alle Produkte", "Neuheiten", "Bestseller", "Kategorien"],
        "support": ["Versand", "Rückgabe", "Bestellung verfolgen", "Support kontaktieren"],
        "default": ["Bestseller", "Neuheiten", "Angebote", "Hilfe"],
        "retry": ["Erneut versuchen", "Support kontaktieren"],
    },
    "pt": {
        "products": ["Ver todos os produtos", "Novidades", "Mais vendidos", "Categorias"],
        "support": ["Frete", "Devoluções", "Rastrear pedido", "Falar com suporte"],
        "default": ["Mais vendidos", "Novidades", "Promoções", "Ajuda"],
        "retry": ["Tentar novamente", "Falar com suporte"],
    },
    "it": {
        "products": ["Tutti i prodotti", "Novità", "Più venduti", "Categorie"],
        "support": ["Spedizioni", "Resi", "Traccia ordine", "Contatta il supporto"],
        "default": ["Più venduti", "Novità", "Saldi", "Aiuto"],
        "retry": ["Riprova", "Contatta il supporto"],
    },
}

ACTION_LABELS: Dict[str, Dict[str, str]] = {
    "en": {"view_product": "View {title}", "add_to_cart": "Add {title} to cart"},
    "fr": {"view_product": "Voir {title}", "add_to_cart": "Ajouter {title} au panier"},
    "es": {"view_product": "Ver {title}", "add_to_cart": "Añadir {title} al carrito"},
    "de": {"view_product": "{title} ansehen", "add_to_cart": "{title} in den Warenkorb"},
    "pt": {"view_product": "Ver {title}", "add_to_cart": "Adicionar {title} ao carrinho"},
    "it": {"view_product": "Vedi {title}", "add_to_cart": "Aggiungi {title} al carrello"},
}


def text_for(language: str, key: str, **kwargs) -> str:
    table = INTRO_TEMPLATES.get(language) or INTRO_TEMPLATES["en"]
    template = table.get(key) or INTRO_TEMPLATES["en"].get(key) or INTRO_TEMPLATES["en"][classifier.GENERAL_CHAT]
    return template.format(**kwargs) if kwargs else template


def quick_replies_for(language: str, kind: str) -> List[str]:
    table = QUICK_REPLIES.get(language) or QUICK_REPLIES["en"]
    return list(table.get(kind) or QUICK_REPLIES["en"]["default"])


def action_label(language: str, action: str, title: str) -> str:
    table = ACTION_LABELS.get(language) or ACTION_LABELS["en"]
    return table[action].format(title=title)
